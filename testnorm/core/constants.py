"""
Constants
Centralised storage for provenance tags, framework ids and shared markers.
"""
PROVENANCE_XML = "xml"
PROVENANCE_NONE = "none"
PROVENANCE_OUTPUT = "output"

# Framework id attached to cases that came from a structured test.xml
XML_FRAMEWORK_ID = "bazel_test_xml"

# Placeholder substituted for an absent filter-template context value
FILTER_WILDCARD = "*"

TEST_XML_FILENAME = "test.xml"
