"""Personal game backlog tracker backed by IGDB and a hosted Supabase project."""
