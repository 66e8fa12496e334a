# run.py
import os
import uvicorn
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler("storefront.log")
    ]
)

logger = logging.getLogger(__name__)

def main():
    port = int(os.getenv("PORT", "5100"))
    logger.info(f"Starting storefront checkout API on port {port}")

    uvicorn.run(
        "storefront.main:app",
        host="0.0.0.0",
        port=port
    )

if __name__ == "__main__":
    main()
