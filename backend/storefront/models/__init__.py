# Import every model so Base.metadata is complete for create_all / Alembic autogenerate.
from storefront.models.user import User, UserRole  # noqa: F401
from storefront.models.refresh_token import RefreshToken  # noqa: F401
from storefront.models.account_token import AccountToken  # noqa: F401
from storefront.models.category import Category  # noqa: F401
from storefront.models.subcategory import Subcategory  # noqa: F401
from storefront.models.product import Product  # noqa: F401
