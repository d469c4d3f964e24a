from investorpedia.extensions import db
from investorpedia.models.user import utcnow


class Portfolio(db.Model):
    __tablename__ = "portfolios"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"),
                        unique=True, nullable=False)
    total_value = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_return = db.Column(db.Numeric(8, 4), nullable=False, default=0)
    monthly_deposit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    active_investments = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    history = db.relationship(
        "PortfolioHistory",
        backref="portfolio",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "totalValue": str(self.total_value),
            "totalReturn": str(self.total_return),
            "monthlyDeposit": str(self.monthly_deposit),
            "activeInvestments": self.active_investments,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class PortfolioHistory(db.Model):
    __tablename__ = "portfolio_history"

    id = db.Column(db.Integer, primary_key=True)
    portfolio_id = db.Column(db.Integer, db.ForeignKey("portfolios.id", ondelete="CASCADE"),
                             nullable=False)
    value = db.Column(db.Numeric(14, 2), nullable=False)
    date = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.Index("idx_portfolio_history_date", "portfolio_id", "date"),
    )

    def to_dict(self):
        return {
            "value": str(self.value),
            "date": self.date.isoformat(),
        }
