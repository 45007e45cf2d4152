"""Basic constants for the openid_rp library."""

# Default Diffie-Hellman modulus and generator.
# Defined in OpenID specification http://openid.net/specs/openid-authentication-2_0.html#pvalue
DEFAULT_DH_MODULUS = ('ANz5OguIOXLsDhmYmsWizjEOHTdxfo2Vcbt2I3MYZuYe91ouJ4mLBX+YkcLiemOcPym2CBRYHNOyyjmG0mg3BVd9RcLn5S3I'
                      'HHoXGHblzqdLFEi/368Ygo79JRnxTkXjgmY0rxlJ5bU1zIKaSDuKdiI+XUkKJX8Fvf8W8vsixYOr')
DEFAULT_DH_GENERATOR = 'Ag=='

# Reasons a positive assertion is rejected. They are reported in
# VerificationResult.failure_reason and never contain secret material.
MALFORMED_MESSAGE = 'malformed_message'
ASSOCIATION_NOT_FOUND = 'association_not_found'
INVALID_NONCE = 'invalid_nonce'
REPLAY_DETECTED = 'replay_detected'
MISSING_SIGNED_FIELD = 'missing_signed_field'
MAC_MISMATCH = 'mac_mismatch'
RETURN_URL_MISMATCH = 'return_url_mismatch'
USER_CANCELLED = 'user_cancelled'
PROVIDER_FAILURE = 'provider_failure'
DISCOVERY_MISMATCH = 'discovery_mismatch'

FAILURE_REASONS = (
    MALFORMED_MESSAGE,
    ASSOCIATION_NOT_FOUND,
    INVALID_NONCE,
    REPLAY_DETECTED,
    MISSING_SIGNED_FIELD,
    MAC_MISMATCH,
    RETURN_URL_MISMATCH,
    USER_CANCELLED,
    PROVIDER_FAILURE,
    DISCOVERY_MISMATCH,
)
