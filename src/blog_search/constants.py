POST_ENTITY_TYPE = "Post"

DEFAULT_LANGUAGE = "zh-CN"

HIGHLIGHT_PRE_TAG = "<mark>"
HIGHLIGHT_POST_TAG = "</mark>"
