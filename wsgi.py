from dotenv import load_dotenv

load_dotenv()

from investorpedia import create_app  # noqa: E402

app = create_app()

# `celery -A wsgi.celery_app worker` / `celery -A wsgi.celery_app beat`
celery_app = app.extensions["celery"]
