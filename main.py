"""
Production entrypoint for the HMO Deal Engine.

Binds to 0.0.0.0:$PORT.
"""

import os
import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting HMO Deal Engine on port {port}")

    # Import app here to ensure clean module loading
    from web.app import app

    uvicorn.run(app, host="0.0.0.0", port=port)
