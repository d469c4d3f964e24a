from decimal import Decimal, ROUND_HALF_UP

from investorpedia.extensions import db
from investorpedia.models.user import utcnow


class Plan(db.Model):
    """Pricing tier. Rows are written only by the `seed-plans` command."""

    __tablename__ = "plans"

    id = db.Column(db.String(50), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    features = db.Column(db.JSON, nullable=False, default=list)
    portfolio_limit = db.Column(db.Integer, nullable=True)  # None means unlimited
    rebalancing_frequency = db.Column(db.String(20), nullable=False)
    management_fee = db.Column(db.Numeric(6, 4), nullable=False)
    has_advanced_analytics = db.Column(db.Boolean, default=False, nullable=False)
    has_tax_optimization = db.Column(db.Boolean, default=False, nullable=False)
    has_dedicated_advisor = db.Column(db.Boolean, default=False, nullable=False)
    is_popular = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def unit_amount(self):
        """Monthly price in minor currency units (cents)."""
        return int((Decimal(self.price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "features": self.features or [],
            "portfolioLimit": self.portfolio_limit,
            "rebalancingFrequency": self.rebalancing_frequency,
            "managementFee": str(self.management_fee),
            "hasAdvancedAnalytics": self.has_advanced_analytics,
            "hasTaxOptimization": self.has_tax_optimization,
            "hasDedicatedAdvisor": self.has_dedicated_advisor,
            "isPopular": self.is_popular,
        }
