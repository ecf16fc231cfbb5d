# Ponto de entrada: gunicorn wsgi:app  |  flask --app wsgi run
import logging

from app import create_app
from config import Settings

settings = Settings.from_env()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(settings)

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
