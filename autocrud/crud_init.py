import logging
import os
import sys


class AUTOCRUD:
    """Default configuration for the generated CRUD endpoints
    Every option can be overridden in the flask app.config or in the environment,
    cfr. autocrud.config.get_config
    """

    # Configuration settings are stored as class variables
    API_PREFIX = "/api"
    DEFAULT_PAGE_LIMIT = 10
    MAX_PAGE_LIMIT = 1000
    DEFAULT_SORT = "-created_at"
    # separator for the "ids" query argument, eg. ?ids=a,b,c
    ID_DELIMITER = ","
    # filter keys starting with this character are rejected as malformed queries
    RESERVED_QUERY_PREFIX = "?"
    DUMMY_MAX_COUNT = 1000
    DEFAULT_CONTENT_TYPE = "application/json"
    LOGLEVEL = logging.WARNING

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        """
        log = logging.getLogger("autocrud")
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# logging initialization
#
try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = AUTOCRUD.init_logging(LOGLEVEL)
