from cocd.github.client import GitHubAPI, GitHubClient, PendingDeployment, Repository, ResponseMeta

__all__ = ["GitHubAPI", "GitHubClient", "PendingDeployment", "Repository", "ResponseMeta"]
