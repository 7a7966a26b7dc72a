#!/usr/bin/env python3
"""
Flask Application Entry Point
"""
import os

from netdelta import create_app, start_background

app = create_app()


def main():
    debug = os.environ.get("FLASK_ENV") == "development"
    if app.config.get("SCHEDULER_AUTOSTART"):
        start_background(app)

    # The reloader would start a second scheduling loop
    app.run(
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 5000)),
        debug=debug,
        use_reloader=False,
        threaded=True,
    )


if __name__ == "__main__":
    main()
