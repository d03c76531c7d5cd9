import threading
from datetime import timedelta

from conftest import payment_webhook
from models import db
from models.booking import Booking
from models.payment import PaymentOrder, PaymentTransaction, PaymentWebhookEvent
from services.factory import get_booking_service, get_payment_service


def test_simultaneous_redelivery_stores_one_transaction(app, user, pod, tomorrow, customer, signed_webhook):
    booking = get_booking_service().create_booking(user.id, pod.id, tomorrow, tomorrow + timedelta(hours=2))
    order = get_payment_service().create_booking_payment(user.id, booking["id"], 500, customer)
    raw, signature, timestamp = signed_webhook(payment_webhook(order["order_id"], 5550001, "SUCCESS", 500))
    db.session.remove()

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                result = get_payment_service().process_webhook(None, signature, timestamp, raw)
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result["transaction_id"])

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert outcomes == ["TXN_5550001", "TXN_5550001"]
    assert PaymentTransaction.query.count() == 1
    assert PaymentTransaction.query.one().payment_status == "success"
    assert PaymentWebhookEvent.query.filter_by(status="processed").count() == 2
    assert PaymentOrder.query.one().status == "paid"
    assert db.session.get(Booking, booking["id"]).status == "confirmed"
