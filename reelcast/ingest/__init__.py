"""Local media helpers: fingerprinting, probing, derivatives and URL intake."""
