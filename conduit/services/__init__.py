# Services package.
#
# Core engine (leaf-first):
#
#   relationships   : membership sets: favorites, bookmarks, follows
#   tag_ledger      : tag usage counts (increment-only) + popular tags
#   feed_query      : tagged-variant feed filters -> query plan
#   pagination      : look-ahead-by-one page fetch, cursor / offset
#   counters        : membership toggles that keep counters in step
#
# Aggregate services built on top:
#
#   article_service : feeds, article CRUD, favorite/bookmark toggles
#   comment_service : comments on an article
#   profile_service : users, profiles, follow toggles
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
