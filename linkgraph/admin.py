from django.contrib import admin, messages

from .models import AutoLinkRun, Post
from .services import NoPublishedPostsError, auto_link_posts


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ('title', 'slug', 'published', 'revision', 'updated_at')
    list_filter = ('published',)
    search_fields = ('title', 'slug')
    prepopulated_fields = {'slug': ('title',)}
    readonly_fields = ('revision', 'created_at', 'updated_at')
    actions = ['auto_link_selected']

    @admin.action(description='Auto-link selected posts')
    def auto_link_selected(self, request, queryset):
        try:
            run = auto_link_posts(post_ids=list(queryset.values_list('pk', flat=True)), user=request.user)
        except NoPublishedPostsError as exc:
            self.message_user(request, str(exc), level=messages.WARNING)
            return
        level = messages.WARNING if run.failed else messages.SUCCESS
        self.message_user(
            request,
            f'Auto-linked {run.modified} of {run.processed} post(s); {run.links_added} link(s) added, {run.failed} failed.',
            level=level,
        )


@admin.register(AutoLinkRun)
class AutoLinkRunAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'scope', 'user', 'processed', 'modified', 'failed', 'links_added')
    list_filter = ('scope',)
    readonly_fields = (
        'user',
        'scope',
        'max_links_per_post',
        'processed',
        'modified',
        'failed',
        'links_added',
        'results',
        'created_at',
    )

    def has_add_permission(self, request):
        return False
