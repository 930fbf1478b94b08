"""Local development entry point.

Usage:
    python run.py

Point the Stripe CLI at the webhook while it runs:
    stripe listen --forward-to localhost:5001/api/payments/webhook
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from changeworks import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
