"""
Picks the encoder for a response from the request 'Accept' header.
"""
import logging
from collections.abc import Sequence

from .formatters import Encoder
from .headers import MediaType, parse_accept
from .records import Request

logger = logging.getLogger(__name__)


def can_encode(encoder: Encoder, accepted_type: MediaType) -> bool:
    """
    Checks whether `encoder` can encode to `accepted_type`.
    """
    if accepted_type.type == "*":
        return True
    enc_type = encoder.enc_type
    return enc_type.type == accepted_type.type and (
        accepted_type.sub_type == "*" or enc_type.sub_type == accepted_type.sub_type
    )


def preferred_encoder(encoders: Sequence[Encoder], request: Request) -> Encoder | None:
    """
    Returns the encoder that encodes to the most preferred type.

    A string 'Accept' header is parsed, anything else is taken as media
    types already sorted by preference. Without an 'Accept' header the
    request content type is used instead, and without either the first
    encoder wins. Returns None when no encoder matches.
    """
    accept = request.headers.get("accept", request.content_type)
    if accept is None:
        return encoders[0] if encoders else None

    accepted_types = parse_accept(accept) if isinstance(accept, str) else accept

    # Highest ranked type first, declaration order among encoders
    for accepted_type in accepted_types:
        for encoder in encoders:
            if can_encode(encoder, accepted_type):
                logger.debug("Accepted type %s matched encoder %r", accepted_type.mime, encoder.name)
                return encoder

    return None
