from . import config, errors, models  # type: ignore
from .bootstrap import Registry
from .members import MemberCreator, MemberResolver
from .phone import validate_phone
