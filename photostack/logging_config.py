"""
Logging setup shared by the API and the command line.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None, log_prefix: str = "photostack") -> logging.Logger:
	"""
	Configure the root logger with a stdout handler and, if log_dir is given,
	a rotating file handler (10 MB, 5 backups).
	"""
	log_level = getattr(logging, level.upper(), logging.INFO)
	logger = logging.getLogger()
	logger.setLevel(log_level)

	formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

	console_handler = logging.StreamHandler(sys.stdout)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(formatter)

	logger.handlers.clear()
	logger.addHandler(console_handler)

	if log_dir:
		os.makedirs(log_dir, exist_ok=True)
		timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
		log_file = os.path.join(log_dir, f"{log_prefix}_{timestamp}.log")
		file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
		file_handler.setLevel(log_level)
		file_handler.setFormatter(formatter)
		logger.addHandler(file_handler)

	logging.getLogger("PIL").setLevel(logging.WARNING)
	return logger
