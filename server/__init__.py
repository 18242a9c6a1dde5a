# =============================================================================
# Echo Scene Narrator - Server Package
# =============================================================================
# This package contains the server-side components responsible for receiving
# the multipart photo upload, asking the vision model for a scene
# description, and returning it as plain text.
# =============================================================================
