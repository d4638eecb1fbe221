"""Database models for the tippingover app.

Pages are stored by namespace and title text. A page can redirect to
another title and can be listed in any number of categories through
``CategoryLink`` rows; category pages themselves are ordinary pages in
the category namespace, so subcategories are category pages linked to
their parent category.
"""

from __future__ import annotations

from django.db import models

from .engine import titles


class Page(models.Model):
    """A wiki page: article, tooltip page, fallback page, file or category."""

    namespace = models.IntegerField(default=titles.NS_MAIN, db_index=True)
    title = models.CharField(max_length=255, help_text='Title text without the namespace prefix.')
    content = models.TextField(blank=True)
    redirect_to = models.CharField(
        max_length=512,
        blank=True,
        help_text='Full title (with optional #fragment) this page redirects to.',
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ('namespace', 'title')
        ordering = ['namespace', 'title']

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return self.page_title.prefixed_text

    @property
    def page_title(self) -> titles.PageTitle:
        return titles.PageTitle(self.namespace, self.title)

    @property
    def is_redirect(self) -> bool:
        return bool(self.redirect_to.strip())


class CategoryLink(models.Model):
    """Places ``page`` directly in the category whose key is ``category``."""

    page = models.ForeignKey(Page, on_delete=models.CASCADE, related_name='category_links')
    category = models.CharField(max_length=255, db_index=True, help_text='Category key, e.g. Tooltip_subjects.')

    class Meta:
        unique_together = ('page', 'category')

    def __str__(self) -> str:  # pragma: no cover - convenience display
        return f"{self.page} in Category:{self.category}"
