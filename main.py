"""
pvemon Application Entry Point

Starts the Proxmox alert system (periodic metric collection, threshold alerts
and workload start/stop notifications) and the operator web API.
"""

import argparse
import logging

from pvemon.config import load_settings
from pvemon.scheduler import create_alert_system, start_alert_system
from pvemon.web import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    """Main application entry point."""
    parser = argparse.ArgumentParser(description='Proxmox Alert Monitor')
    parser.add_argument('--config', '-c', default='config/settings.yaml',
                        help='Path to settings file')
    parser.add_argument('--host', default=None,
                        help='Web server host')
    parser.add_argument('--port', '-p', type=int, default=None,
                        help='Web server port')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug mode')
    parser.add_argument('--no-collection', action='store_true',
                        help='Disable automatic metric collection')
    args = parser.parse_args()

    settings = load_settings(args.config)

    logger.info(f"Starting {settings['app']['name']}")
    logger.info(f"Configuration loaded from: {args.config}")

    if args.no_collection:
        alert_system = create_alert_system(settings)
    else:
        alert_system = start_alert_system(settings=settings)

    app = create_app(alert_system)

    host = args.host or settings['web']['host']
    port = args.port or settings['web']['port']
    debug = args.debug or settings['app']['debug']

    logger.info(f"Starting web server on http://{host}:{port}")

    try:
        app.run(host=host, port=port, debug=debug, use_reloader=False)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        alert_system.stop()
        logger.info("Application stopped")


if __name__ == '__main__':
    main()
