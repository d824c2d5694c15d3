"""Local development entry point.

Usage:
    python run.py

Loads .env, then serves the webhook endpoints on port 5001. Point the
Stripe CLI (`stripe listen --forward-to localhost:5001/api/webhooks/stripe`)
or a tunnel registered with Square at it.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from orderhook import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
