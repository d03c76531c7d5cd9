from flask import Blueprint, request, jsonify, g

from services.factory import get_pod_service
from utils.audit import log_event
from utils.auth_context import require_roles
from utils.validation import parse_datetime

pods_bp = Blueprint("pods", __name__, url_prefix="/pods")


# ---------- ADMIN: manage pods ----------
@pods_bp.post("")
@require_roles("ADMIN")
def create_pod():
    data = request.get_json(silent=True) or {}
    pod = get_pod_service().create_pod(data)

    log_event("POD_CREATE", user_id=g.user.id, entity="pod", entity_id=pod["id"])
    return jsonify(pod), 201


@pods_bp.patch("/<int:pod_id>")
@require_roles("ADMIN")
def update_pod(pod_id: int):
    data = request.get_json(silent=True) or {}
    pod = get_pod_service().update_pod(pod_id, data)

    log_event("POD_UPDATE", user_id=g.user.id, entity="pod", entity_id=pod_id, metadata={"fields": sorted(data)})
    return jsonify(pod), 200


# ---------- public: browse pods ----------
@pods_bp.get("")
def list_pods():
    status = request.args.get("status")
    return jsonify(get_pod_service().list_pods(status=status)), 200


@pods_bp.get("/search")
def search_pods():
    args = request.args
    if args.get("lat") is None or args.get("lng") is None:
        return jsonify(error="lat and lng are required"), 400

    check_in = check_out = None
    if args.get("check_in") or args.get("check_out"):
        check_in = parse_datetime(args.get("check_in"), "check_in")
        check_out = parse_datetime(args.get("check_out"), "check_out")

    pods = get_pod_service().search_nearby(
        args.get("lat"),
        args.get("lng"),
        range_km=args.get("range_km", 5),
        check_in=check_in,
        check_out=check_out,
        capacity=args.get("capacity", type=int),
    )
    return jsonify(pods), 200


@pods_bp.get("/<int:pod_id>")
def get_pod(pod_id: int):
    return jsonify(get_pod_service().get_pod(pod_id)), 200
