"""
Account deletion.

Deleting an account removes everything that references the user in a
single transaction: either every row below goes, or none does.
"""
import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from errors import ForbiddenError
from models import (
    db, AuditLog, Chat, ChatMessage, Favorite, FraudReport, Payment, Product,
    RoleEnum, SupportTicket, TicketReply, User, VerificationCode,
)

logger = logging.getLogger(__name__)


def _own_product_ids(user_id):
    return select(Product.id).where(Product.seller_id == user_id)


def _purge_favorites(user_id):
    Favorite.query.filter(
        or_(Favorite.user_id == user_id, Favorite.product_id.in_(_own_product_ids(user_id)))
    ).delete(synchronize_session=False)


def _purge_fraud_reports(user_id):
    FraudReport.query.filter(
        or_(FraudReport.reporter_id == user_id, FraudReport.product_id.in_(_own_product_ids(user_id)))
    ).delete(synchronize_session=False)


def _purge_tickets(user_id):
    own_tickets = select(SupportTicket.id).where(SupportTicket.user_id == user_id)
    TicketReply.query.filter(
        or_(TicketReply.ticket_id.in_(own_tickets), TicketReply.author_id == user_id)
    ).delete(synchronize_session=False)
    SupportTicket.query.filter(SupportTicket.user_id == user_id).delete(synchronize_session=False)


def _purge_chats(user_id):
    own_chats = select(Chat.id).where(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id))
    ChatMessage.query.filter(ChatMessage.chat_id.in_(own_chats)).delete(synchronize_session=False)
    Chat.query.filter(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id)).delete(
        synchronize_session=False
    )


def _purge_products(user_id):
    Product.query.filter(Product.seller_id == user_id).delete(synchronize_session=False)


def _purge_payments(user_id):
    Payment.query.filter(Payment.user_id == user_id).delete(synchronize_session=False)


def delete_account(user: User) -> None:
    if user.role == RoleEnum.admin:
        raise ForbiddenError("Admin accounts cannot be deleted")

    user_id = user.id
    phone = user.phone

    try:
        _purge_favorites(user_id)
        _purge_fraud_reports(user_id)
        _purge_tickets(user_id)
        _purge_chats(user_id)
        # products reference payments, so they go first
        _purge_products(user_id)
        _purge_payments(user_id)
        VerificationCode.query.filter_by(phone=phone).delete(synchronize_session=False)
        AuditLog.query.filter(AuditLog.user_id == user_id).update(
            {AuditLog.user_id: None}, synchronize_session=False
        )
        User.query.filter(User.id == user_id).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Account deletion for user %s rolled back", user_id)
        raise

    logger.info("Deleted account %s", user_id)
