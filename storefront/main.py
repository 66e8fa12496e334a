# storefront/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from storefront.routes import cart, checkout, notification, orders
from storefront.core.config import settings
from storefront.core.database import create_tables
from storefront.services import sessions
from dotenv import load_dotenv

load_dotenv()
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Storefront checkout API: shipping, card capture, OTP verification and order placement",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_event():
    await create_tables()

@app.on_event("shutdown")
async def shutdown_event():
    # Stops any OTP countdowns still running
    for session_id in list(sessions.registry.session_ids()):
        sessions.registry.discard(session_id)

app.include_router(checkout.router, prefix=f"{settings.API_V1_STR}/checkout", tags=["Checkout"])
app.include_router(cart.router, prefix=f"{settings.API_V1_STR}/cart", tags=["Cart"])
app.include_router(cart.history_router, prefix=f"{settings.API_V1_STR}/history", tags=["History"])
app.include_router(notification.router, prefix=f"{settings.API_V1_STR}/notifications", tags=["Notifications"])
app.include_router(orders.router, prefix=f"{settings.API_V1_STR}/orders", tags=["Orders"])

@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME}
