from marketplace.models.user import User
from marketplace.models.product import Product, Batch
from marketplace.models.cart import Cart, CartItem, CartBatchItem
from marketplace.models.order import Order, OrderItem, OrderBatchItem, Counter
from marketplace.models.transaction import Transaction
from marketplace.models.rating import Rating
from marketplace.models.notification import Notification
from marketplace.models.chat import Conversation, ConversationParticipant, Message

__all__ = [
    "User", "Product", "Batch", "Cart", "CartItem", "CartBatchItem", "Order", "OrderItem",
    "OrderBatchItem", "Counter", "Transaction", "Rating", "Notification", "Conversation",
    "ConversationParticipant", "Message",
]
