from fastapi import FastAPI, Depends, HTTPException, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Dict, List, Optional
import json
import logging
import uvicorn
import models
import auth
from billing import Discount, ExtraCharge, line_total, to_money
from database import engine, get_db, init_restaurant_data, wait_for_db
from errors import LifecycleError
from order_aggregator import OrderAggregator, OrderGroup
from payments import PaymentService, share_item_ids
from redis_client import redis_client
from schemas import (
    BillSplitResponse,
    BulkStatusUpdate,
    CheckInRequest,
    DepartmentViewResponse,
    OrderCreate,
    OrderGroupResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentItemResponse,
    PaymentRequest,
    PaymentResponse,
    SeatRequest,
    SeatResponse,
    SessionOrdersResponse,
    SessionResponse,
    ShareResponse,
    SharePaymentRequest,
    SplitRequest,
    StatusUpdateResultResponse,
    TableResponse,
)
from table_sessions import TableSessionManager

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Restaurant lifecycle API")


origins = [
    "http://localhost",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    if wait_for_db():
        logger.info("Creating database tables...")
        models.Base.metadata.create_all(bind=engine)
        init_restaurant_data()
        logger.info("Database initialized")
    else:
        logger.error("Database was not ready at service start")

    if redis_client.is_available():
        logger.info("Redis available")
    else:
        logger.warning("Redis unavailable, caching disabled and session locks are in-process")


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    logger.info(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")} for e in exc.errors()]
    detail = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": "ValidationError", "detail": detail, "context": {"errors": errors}},
    )


async def get_current_actor(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = authorization.replace("Bearer ", "")
    actor = auth.actor_from_token(token)
    if not actor:
        raise HTTPException(status_code=401, detail="Invalid token")
    return actor


@app.get("/")
def read_root():
    return {"message": "Restaurant API is working!"}


@app.get("/health")
def health_check():
    return {"status": "ok", "message": "API is running"}


@app.get("/cache/info")
def get_cache_info():
    return redis_client.get_cache_info()


# ========== Tables & sessions ==========

@app.get("/tables", response_model=List[TableResponse])
def get_tables(db: Session = Depends(get_db)):
    cached_tables = redis_client.get_cached_tables()
    if cached_tables:
        return [TableResponse(**table) for table in cached_tables]

    tables_data = TableSessionManager(db).table_occupancy()
    redis_client.cache_tables(tables_data)
    return [TableResponse(**table) for table in tables_data]


@app.post("/sessions", response_model=SessionResponse)
def check_in(request: CheckInRequest, db: Session = Depends(get_db),
             actor: str = Depends(get_current_actor)):
    session = TableSessionManager(db).check_in(
        request.party_size, request.customer_name, request.customer_phone, request.notes
    )
    return get_session_response(session)


@app.get("/sessions", response_model=List[SessionResponse])
def list_sessions(db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return [get_session_response(s) for s in TableSessionManager(db).list_open()]


@app.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: int, db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return get_session_response(TableSessionManager(db).get(session_id))


@app.put("/sessions/{session_id}/seat", response_model=SeatResponse)
def seat_session(session_id: int, request: SeatRequest, db: Session = Depends(get_db),
                 actor: str = Depends(get_current_actor)):
    session, warnings = TableSessionManager(db).seat(session_id, request.table_id, actor)
    return SeatResponse(session=get_session_response(session), warnings=warnings)


@app.put("/sessions/{session_id}/checkout", response_model=SessionResponse)
def checkout_session(session_id: int, db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return get_session_response(TableSessionManager(db).checkout(session_id))


@app.delete("/sessions/{session_id}")
def remove_waiting_session(session_id: int, db: Session = Depends(get_db),
                           actor: str = Depends(get_current_actor)):
    TableSessionManager(db).remove_waiting(session_id)
    return {"message": f"Session {session_id} removed"}


@app.get("/sessions/{session_id}/order-groups", response_model=SessionOrdersResponse)
def get_session_order_groups(session_id: int, db: Session = Depends(get_db),
                             actor: str = Depends(get_current_actor)):
    aggregator = OrderAggregator(db)
    groups = aggregator.consolidate(session_id)
    return SessionOrdersResponse(
        session_id=session_id,
        running_total=aggregator.running_total(session_id),
        groups=[get_group_response(g) for g in groups],
    )


@app.get("/sessions/{session_id}/payments", response_model=List[PaymentResponse])
def get_session_payments(session_id: int, db: Session = Depends(get_db),
                         actor: str = Depends(get_current_actor)):
    return [get_payment_response(p) for p in PaymentService(db).session_payments(session_id)]


# ========== Orders ==========

@app.post("/orders", response_model=OrderResponse)
def create_order(order: OrderCreate, db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    db_order = OrderAggregator(db).submit_order(
        order.session_id, order.table_id, order.items,
        notes=order.notes, parent_order_id=order.parent_order_id, actor=actor,
    )
    return get_order_response(db_order)


@app.get("/orders/groups", response_model=List[OrderGroupResponse])
def get_order_groups(status: Optional[str] = None, db: Session = Depends(get_db),
                     actor: str = Depends(get_current_actor)):
    return [get_group_response(g) for g in OrderAggregator(db).order_groups(status)]


@app.patch("/orders/status", response_model=List[StatusUpdateResultResponse])
def update_orders_status(update: BulkStatusUpdate, db: Session = Depends(get_db),
                         actor: str = Depends(get_current_actor)):
    results = OrderAggregator(db).update_statuses(update.order_ids, update.status, actor, update.reason)
    return [StatusUpdateResultResponse(**r.to_dict()) for r in results]


@app.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return get_order_response(OrderAggregator(db).get_order(order_id))


@app.patch("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: int, update: OrderStatusUpdate, db: Session = Depends(get_db),
                        actor: str = Depends(get_current_actor)):
    db_order = OrderAggregator(db).change_status(order_id, update.status, actor, update.reason)
    return get_order_response(db_order)


@app.delete("/orders/{order_id}/items/{item_id}", response_model=OrderResponse)
def delete_order_item(order_id: int, item_id: int, db: Session = Depends(get_db),
                      actor: str = Depends(get_current_actor)):
    return get_order_response(OrderAggregator(db).remove_item(order_id, item_id, actor))


@app.get("/departments/load", response_model=Dict[str, int])
def get_department_load(db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return OrderAggregator(db).department_load()


@app.get("/departments/{department}/pending", response_model=DepartmentViewResponse)
def get_department_pending(department: str, db: Session = Depends(get_db),
                           actor: str = Depends(get_current_actor)):
    cached_orders = redis_client.get_cached_department_view(department)
    if cached_orders is not None:
        return DepartmentViewResponse(department=department,
                                      orders=[OrderResponse(**o) for o in cached_orders])

    orders = [get_order_response(o) for o in OrderAggregator(db).pending_for_department(department)]
    redis_client.cache_department_view(department, [o.dict() for o in orders])
    return DepartmentViewResponse(department=department, orders=orders)


# ========== Billing ==========

@app.post("/billing/process", response_model=PaymentResponse)
def process_payment(request: PaymentRequest, db: Session = Depends(get_db),
                    actor: str = Depends(get_current_actor)):
    charges = [ExtraCharge(c.description, c.amount, c.is_percentage) for c in request.extra_charges]
    discount = None
    if request.discount and (request.discount.percent is not None or request.discount.fixed_amount is not None):
        discount = Discount(request.discount.percent, request.discount.fixed_amount)

    payment = PaymentService(db).process_payment(
        request.session_id, request.payment_method.value, charges, discount,
        request.received_amount, request.notes, actor,
    )
    return get_payment_response(payment)


@app.get("/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: int, db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return get_payment_response(PaymentService(db).get_payment(payment_id))


@app.post("/billSplit", response_model=BillSplitResponse)
def create_bill_split(request: SplitRequest, db: Session = Depends(get_db),
                      actor: str = Depends(get_current_actor)):
    params = request.params
    people = [(p.label, p.amount) for p in params.people] if params.people else None
    split = PaymentService(db).create_split(
        request.session_id, request.strategy,
        number_of_people=params.number_of_people,
        people=people,
        assignments=params.assignments,
        number_of_payers=params.number_of_payers,
        labels=params.labels,
        payment_id=params.payment_id,
        actor=actor,
    )
    return get_split_response(split)


@app.post("/billSplit/payment", response_model=ShareResponse)
def pay_bill_share(request: SharePaymentRequest, db: Session = Depends(get_db),
                   actor: str = Depends(get_current_actor)):
    share = PaymentService(db).record_share_payment(request.split_id, request.share_index, request.amount)
    return get_share_response(share)


@app.get("/billSplit/{split_id}", response_model=BillSplitResponse)
def get_bill_split(split_id: int, db: Session = Depends(get_db), actor: str = Depends(get_current_actor)):
    return get_split_response(PaymentService(db).get_split(split_id))


# ========== Response builders ==========

def get_session_response(session: models.CustomerSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        customer_name=session.customer_name,
        customer_phone=session.customer_phone,
        notes=session.notes,
        party_size=session.party_size,
        status=session.status,
        table_id=session.table_id,
        table_number=session.table.number if session.table else None,
        check_in_time=session.check_in_time,
        seated_time=session.seated_time,
        check_out_time=session.check_out_time,
    )


def get_item_response(item: models.OrderItem) -> OrderItemResponse:
    return OrderItemResponse(
        id=item.id,
        menu_item_id=item.menu_item_id,
        menu_item_name=item.menu_item_name,
        department=item.department,
        quantity=item.quantity,
        unit_price=item.unit_price,
        line_total=to_money(line_total(item.unit_price, item.quantity)),
        notes=item.notes,
        selections=json.loads(item.selections) if item.selections else None,
    )


def get_order_response(order: models.Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        session_id=order.session_id,
        table_id=order.table_id,
        parent_order_id=order.parent_order_id,
        payment_id=order.payment_id,
        status=order.status,
        total_amount=order.total_amount,
        notes=order.notes,
        cancellation_reason=order.cancellation_reason,
        ordered_at=order.ordered_at,
        confirmed_at=order.confirmed_at,
        preparing_at=order.preparing_at,
        ready_at=order.ready_at,
        served_at=order.served_at,
        completed_at=order.completed_at,
        cancelled_at=order.cancelled_at,
        items=[get_item_response(item) for item in order.items],
    )


def get_group_response(group: OrderGroup) -> OrderGroupResponse:
    return OrderGroupResponse(
        order_id=group.order_id,
        order_number=group.order_number,
        status=group.status.value,
        total_amount=group.total_amount,
        submission_count=group.submission_count,
        order_ids=group.order_ids,
        items=[get_item_response(item) for item in group.items],
    )


def get_payment_response(payment: models.Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        payment_number=payment.payment_number,
        session_id=payment.session_id,
        payment_method=payment.payment_method,
        subtotal_amount=payment.subtotal_amount,
        extra_charges_amount=payment.extra_charges_amount,
        discount_amount=payment.discount_amount,
        final_amount=payment.final_amount,
        received_amount=payment.received_amount,
        change_amount=payment.change_amount,
        created_at=payment.created_at,
        items=[
            PaymentItemResponse(
                order_item_id=item.order_item_id,
                menu_item_name=item.menu_item_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                notes=item.notes,
            )
            for item in payment.items
        ],
    )


def get_share_response(share: models.BillShare) -> ShareResponse:
    amount = to_money(share.amount)
    paid = to_money(share.paid_amount)
    return ShareResponse(
        index=share.position,
        label=share.label,
        amount=amount,
        paid_amount=paid,
        remaining=max(amount - paid, to_money(0)),
        status=share.status,
        item_ids=share_item_ids(share),
    )


def get_split_response(split: models.BillSplit) -> BillSplitResponse:
    return BillSplitResponse(
        id=split.id,
        session_id=split.session_id,
        payment_id=split.payment_id,
        strategy=split.strategy,
        total_amount=split.total_amount,
        variance=split.variance,
        shares=[get_share_response(s) for s in split.shares],
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
