from .user import User
from .product import Product, GoldPrice
from .cart import CartItem
from .order import Order, OrderItem, PreOrder, OrderSequence
from .payment import ManualPayment
from .notification import AdminNotification
from .otp import OtpVerification
