import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configura el logging raíz una sola vez al arrancar la aplicación."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # APScheduler es muy verboso en INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
