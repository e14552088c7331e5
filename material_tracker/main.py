from fastapi import FastAPI

from material_tracker.config import settings
from material_tracker.logging_config import configure_logging
from material_tracker.routers import delivery_tickets, materials, purchase_orders

configure_logging(settings.log_level)

app = FastAPI(title='Material Tracker')

app.include_router(materials.router)
app.include_router(purchase_orders.router)
app.include_router(delivery_tickets.router)


@app.get('/healthz')
def healthz() -> dict:
    return {'status': 'ok'}
