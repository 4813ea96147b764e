"""
FastAPI application entry point.

- `hcbilling/core/setup.py`: Early initialization (env, Sentry, logging)
- `hcbilling/core/application.py`: Application factory
- `hcbilling/api/routes/`: Route handlers organized by domain

Run with ``uvicorn hcbilling.main:app``.
"""
from hcbilling.core.setup import setup_application
from hcbilling.core.application import create_application

# Must run before the app is created
setup_application()

app = create_application()
