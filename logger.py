# logger.py
# Application logging

import logging
import os
import sys
from datetime import datetime

import config

FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

logger = logging.getLogger("storefront")


def setup_logging():
    """Attach the console handler and, if LOG_DIR is set, a dated log file"""
    if logger.handlers:
        return logger
    logger.setLevel(config.LOG_LEVEL)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(FORMAT, '%H:%M:%S'))
    logger.addHandler(console_handler)

    if config.LOG_DIR:
        os.makedirs(config.LOG_DIR, exist_ok=True)
        log_path = os.path.join(config.LOG_DIR, f'storefront_{datetime.now().strftime("%Y%m%d")}.log')
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(FORMAT, '%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)
    return logger


def log_event(msg: str):
    """Informational event"""
    logger.info(msg)


def log_error(msg: str, exc: Exception = None):
    """Error with optional traceback"""
    if exc:
        logger.error(f"{msg}: {str(exc)}", exc_info=exc)
    else:
        logger.error(msg)


def log_warning(msg: str):
    logger.warning(msg)


def log_startup():
    logger.info("=" * 60)
    logger.info("STOREFRONT API STARTED")
    logger.info("=" * 60)
    logger.info(f"Python: {sys.version.split()[0]}")
    logger.info(f"Database: {config.DATABASE_NAME or 'not configured'}")
    logger.info(f"Uploads: {'ftp://' + str(config.FTP_HOST) if config.FTP else config.UPLOAD_DIR}")
    logger.info(f"Log dir: {config.LOG_DIR or 'console only'}")
    logger.info("=" * 60)
