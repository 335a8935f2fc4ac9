
from .base import Poster, SelfIdentity
from .napcat import NapCatListener, NapCatPoster, parse_post

__all__ = ["NapCatListener", "NapCatPoster", "Poster", "SelfIdentity", "parse_post"]
