from sqlalchemy import select

from investorpedia.extensions import db


def select_for_update(model, **filters):
    """
    Load one row with a row lock (a no-op on SQLite), overwriting whatever
    the session's identity map already holds for it.
    """
    stmt = select(model).filter_by(**filters).with_for_update()
    return db.session.execute(
        stmt, execution_options={"populate_existing": True}
    ).scalar_one_or_none()
