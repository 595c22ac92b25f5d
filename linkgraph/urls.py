"""URL configuration for the linkgraph app.

The patterns are mounted under ``/api/`` by the project URL
configuration and namespaced with ``app_name``.
"""

from django.urls import path

from . import views

app_name = 'linkgraph'

urlpatterns = [
    path('posts/<int:post_id>/internal-links/', views.add_internal_links, name='internal_links'),
    path('posts/<int:post_id>/links/', views.post_links, name='post_links'),
    path('posts/auto-link/', views.auto_link, name='auto_link'),
    path('posts/with-links/', views.with_links, name='posts_with_links'),
    path('posts/process-content/', views.process_content, name='process_content'),
]
