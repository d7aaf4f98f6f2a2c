from django.urls import path
from .views import (
    AstroScopeGenerateView,
    ContentDetailView,
    ContentFavoriteView,
    ContentListView,
    GenerationHistoryView,
    GenerationStatsView,
    LibraryStatsView,
    PricingView,
    TarotPathGenerateView,
    TestConnectionView,
    ZodiacTomeGenerateView,
)

urlpatterns = [
    path('astroscope/generate', AstroScopeGenerateView.as_view(), name='ai-astroscope'),
    path('tarotpath/generate', TarotPathGenerateView.as_view(), name='ai-tarotpath'),
    path('zodiac-tome/generate', ZodiacTomeGenerateView.as_view(), name='ai-zodiac-tome'),
    path('content', ContentListView.as_view(), name='ai-content'),
    path('content/<int:pk>', ContentDetailView.as_view(), name='ai-content-detail'),
    path('content/<int:pk>/favorite', ContentFavoriteView.as_view(), name='ai-content-favorite'),
    path('library/stats', LibraryStatsView.as_view(), name='ai-library-stats'),
    path('pricing', PricingView.as_view(), name='ai-pricing'),
    path('history', GenerationHistoryView.as_view(), name='ai-history'),
    path('stats', GenerationStatsView.as_view(), name='ai-stats'),
    path('test-connection', TestConnectionView.as_view(), name='ai-test-connection'),
]
