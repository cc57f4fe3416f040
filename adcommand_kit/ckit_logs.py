import sys
import logging


QUIET_LOGGERS = ["httpx", "httpcore", "openai"]


def setup_logger(level: int = logging.INFO):
    root = logging.getLogger()
    if any(getattr(h, "_adcommand", False) for h in root.handlers):
        return

    class CustomHandler(logging.Handler):
        _adcommand = True

        def emit(self, record):
            level = "[INFO]"
            if record.levelno == logging.DEBUG:
                level = "[DEBUG]"
            elif record.levelno == logging.WARNING:
                level = "[WARN] ⚠️ "
            elif record.levelno in [logging.ERROR, logging.CRITICAL]:
                level = "[ERROR] 🛑"
            log_entry = self.format(record)
            log_entry = log_entry.replace("!!LEVEL!!", level, 1)
            sys.stderr.write(log_entry)
            sys.stderr.write("\n")
            sys.stderr.flush()

    handler = CustomHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s.%(msecs)03d %(name)s !!LEVEL!! %(message)s', datefmt='%Y%m%d %H:%M:%S'))

    for name in logging.Logger.manager.loggerDict.keys():
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    root.handlers = []
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        quiet = logging.getLogger(name)
        quiet.handlers = []
        quiet.propagate = False
        quiet.setLevel(logging.WARNING)
