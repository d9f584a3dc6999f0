"""Turn processing helpers.

Local checks run before the external validator; every refusal raises `ValidationRejected`.
"""
