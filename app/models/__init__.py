from app.models.organization import Organization
from app.models.user import User
from app.models.user_organization import UserOrganization
from app.models.task import Task, TaskComment
from app.models.customer import Customer
from app.models.product import Product
from app.models.inventory import Inventory
from app.models.order import Order, OrderItem
from app.models.sequence import Sequence

__all__ = [
    "Customer",
    "Inventory",
    "Order",
    "OrderItem",
    "Organization",
    "Product",
    "Sequence",
    "Task",
    "TaskComment",
    "User",
    "UserOrganization",
]
