import logging
import sys
from datetime import datetime


class ProxyFormatter(logging.Formatter):
    """
    One line per record:
    [ Tue Jan 06 05:32:41 AM 2026 ] : INFO : webview.pipeline : Message
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p %Y")
        line = f"[ {timestamp} ] : {record.levelname} : {record.name} : {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(debug=False, name="webview", log_file=None):
    """Configure the package logger; DEBUG when accounting is on."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    # Avoid duplicate handlers if called more than once
    if logger.handlers:
        return logger

    formatter = ProxyFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
