"""
Entry point for Flask.

Usage (from project root):

    export FLASK_APP=run.py
    flask seed
    flask run

or:

    flask --app run.py --debug run

"""

from vendor_billing import create_app

# WSGI application object for Flask to run. `flask run` looks for this `app` variable to start the application.
app = create_app()

if __name__ == "__main__":
    # For direct `python run.py` usage (dev only) - use `flask run` or a WSGI server instead.
    app.run(debug=True)
