"""Development server.

    python run.py

Reads .env, then serves the API on PORT (default 5001). Reminders are not
scheduled here; trigger them with `flask send-reminders` or the cron
endpoint.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from salestrack import create_app  # noqa: E402

app = create_app(os.environ.get("FLASK_ENV", "development"))

if __name__ == "__main__":
    app.run(
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", 5001)),
        debug=app.config.get("DEBUG", False),
    )
