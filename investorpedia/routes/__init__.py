from investorpedia.routes.account import account_bp
from investorpedia.routes.billing import billing_bp
from investorpedia.routes.health import health_bp
from investorpedia.routes.webhooks import webhooks_bp


def register_blueprints(app):
    for blueprint in (webhooks_bp, billing_bp, account_bp, health_bp):
        app.register_blueprint(blueprint)
    app.logger.info("Blueprints registered")
