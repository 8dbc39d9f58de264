# Services package.
#
# Each module exposes async functions for a single aggregate:
#
#   user_service    : list / detail / create for User
#   post_service    : list / create for Post
#   comment_service : append-only comment creation
#
# Every function takes the ``Database`` store handle as its first argument
# and opens its own session, so reads can be re-run by background cache
# refreshes after the originating request has finished.
