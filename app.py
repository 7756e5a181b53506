import os

from campus_trade import create_app

app = create_app()

# =============================================================================
# RUN APPLICATION
# =============================================================================

if __name__ == "__main__":
    app.run(
        debug=os.getenv("FLASK_DEBUG", "0") == "1",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 5000)),
    )
