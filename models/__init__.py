# Import models so that SQLAlchemy metadata includes them on app startup
from .store import Store, StorePlan, StoreStatus, store_followers  # noqa: F401
from .listing import Listing  # noqa: F401
from .notification import Notification  # noqa: F401
