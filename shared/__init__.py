# =============================================================================
# Echo Scene Narrator - Shared Package
# =============================================================================
# Data contracts and the error taxonomy used by both the handheld client and
# the describe server.
# =============================================================================
