"""CBOM (CycloneDX) and SARIF report writers."""
