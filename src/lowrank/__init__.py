"""Low-rank factorization of movie ratings into user and movie latent features.

Core idea:
- Index raw (userId, movieId, rating) rows into a dense rating matrix, holding
  some ratings out for RMSE evaluation
- Learn user and movie latent matrices by full-batch gradient descent, ignoring
  unrated cells
- Export per-movie latent features so new users can be approximated against
  the frozen movie matrix without retraining
"""
