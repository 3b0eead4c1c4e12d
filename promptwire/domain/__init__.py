# This package holds the tagged-text protocol

# +---------------------+
# |      Records        |   (Typed, immutable, owned by the agent loop)
# |---------------------|
# | Messages            |
# | Thoughts            |
# | Action calls        |
# | Capabilities        |
# +---------------------+
#          |
#          v  formatting/
# +------------------------------+
# |        Prompt text           |   (template + projection, prompting/)
# +------------------------------+
#          |
#          v
#   [LLM, outside this package]
#          |
#          v  streaming/
# +------------------------------+
# |        Parser state          |   (one accumulator per decode session)
# +------------------------------+
