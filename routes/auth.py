from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User, Role
from security.password import hash_password, verify_password, password_is_acceptable
from security.session import create_session, revoke_session, token_from_request
from security.csrf import issue_csrf_token
from utils.audit import log_event
from utils.auth_context import login_required
from utils.validation import is_valid_email


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _client_ip():
    return request.headers.get("X-Forwarded-For", request.remote_addr)


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip() or None
    phone_number = (data.get("phone_number") or "").strip() or None

    if not is_valid_email(email):
        return jsonify(error="Invalid email"), 400
    if not password_is_acceptable(password):
        return jsonify(error="Password must be 8 to 72 characters"), 400

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        return jsonify(error="Email already registered"), 409

    user = User(email=email, password_hash=hash_password(password), name=name, phone_number=phone_number)
    db.session.add(user)
    db.session.flush()

    user_role = Role.query.filter_by(name="USER").first()
    if user_role:
        user.roles.append(user_role)

    db.session.commit()
    log_event("REGISTER_SUCCESS", user_id=user.id)

    return jsonify(message="Registered successfully", id=user.id), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    raw_token = create_session(
        user.id,
        ip=_client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "podslot_session")
    max_age = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    # token in the body is for bearer clients (mobile app); browsers use the cookie
    resp = jsonify(message="Login OK", token=raw_token, user=user.summary())
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=max_age,
        path="/",
    )

    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        name=g.user.name,
        phone_number=g.user.phone_number,
        roles=[r.name for r in g.user.roles],
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "podslot_session")
    raw_token, _ = token_from_request()

    revoke_session(raw_token)
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    return resp, 200
