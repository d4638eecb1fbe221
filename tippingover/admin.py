from django.contrib import admin

from .models import CategoryLink, Page


class CategoryLinkInline(admin.TabularInline):
    model = CategoryLink
    extra = 1


@admin.register(Page)
class PageAdmin(admin.ModelAdmin):
    list_display = ('title', 'namespace', 'redirect_to', 'updated_at')
    list_filter = ('namespace',)
    search_fields = ('title', 'redirect_to')
    inlines = [CategoryLinkInline]


@admin.register(CategoryLink)
class CategoryLinkAdmin(admin.ModelAdmin):
    list_display = ('page', 'category')
    search_fields = ('page__title', 'category')
