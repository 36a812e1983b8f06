from .common import *  # noqa
from .reference import *  # noqa
from .genealogy import *  # noqa
from .production import *  # noqa
from .material_queue import *  # noqa
from .security_audit import *  # noqa

# Platform event table (transactional outbox)
from app.events.outbox import *  # noqa
